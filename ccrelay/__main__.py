from ccrelay.cli import main

main()
