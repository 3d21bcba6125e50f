"""cli-capture 入口点。

支持: python -m cli_capture
"""

from .app import main

if __name__ == "__main__":
    main()
