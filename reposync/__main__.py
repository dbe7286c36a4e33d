"""Permite ejecutar: python -m reposync"""

from reposync.cli.app import main

if __name__ == "__main__":
    main()
