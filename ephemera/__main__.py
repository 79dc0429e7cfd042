from ephemera.main import main

main()
