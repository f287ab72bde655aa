from ez1bridge.main import main

main()
