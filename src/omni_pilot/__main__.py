from omni_pilot.cli import main

main()
