"""
Convenience entrypoint for the practice partner.

Allows running `python main.py` in addition to the `kaiwa-partner` script.
"""

from kaiwa_partner.cli import main


if __name__ == "__main__":
    main()
