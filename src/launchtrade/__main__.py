from launchtrade.main import main

main()
