"""Command-line interface for vpnrd."""

from .vpnrdctl import build_parser, main

__all__ = ['build_parser', 'main']
