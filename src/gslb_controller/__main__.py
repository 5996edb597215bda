"""Allow `python -m gslb_controller`."""

from .cli import main

main()
