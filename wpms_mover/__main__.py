#!/usr/bin/env python3
"""
Main execution module for the WordPress multisite tenant mover
"""

from wpms_mover.cli.commands import main

if __name__ == "__main__":
    main()
