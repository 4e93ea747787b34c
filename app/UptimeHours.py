from uptime_hours.menubar import main

main()
