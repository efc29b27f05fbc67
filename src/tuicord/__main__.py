from tuicord.cli.main import main

main()
