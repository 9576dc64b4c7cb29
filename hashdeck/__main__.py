"""Allow `python -m hashdeck`."""

from .cli import main

main()
