from gitdeploy import main

main()
