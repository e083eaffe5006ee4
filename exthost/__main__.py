"""Allow running the extension host as a module: python -m exthost."""

from exthost.runner import main

if __name__ == "__main__":
    main()
