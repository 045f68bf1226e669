from mailsync.main import main

main()
