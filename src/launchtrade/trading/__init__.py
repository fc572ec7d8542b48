"""Trade lifecycle orchestration and trailing stops."""
