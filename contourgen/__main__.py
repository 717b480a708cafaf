"""Allow ``python -m contourgen``; worker processes are launched this way."""

from .cli import main

main()
