"""Entry point for ``python -m ssh_tunnel_manager``."""

from .cli import main

if __name__ == "__main__":
    main()
