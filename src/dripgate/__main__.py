from dripgate.main import main

main()
