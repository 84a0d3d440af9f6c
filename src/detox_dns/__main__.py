"""Entry point for detox-dns."""
import asyncio
from .server import main as server_main

__all__ = ['main']


def main():
    """Main entry point for the detox-dns console script."""
    try:
        asyncio.run(server_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
