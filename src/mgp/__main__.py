# src/mgp/__main__.py
from mgp.cli import main

if __name__ == "__main__":
    main()
