"""
Card Sanitizer — Paranoid intake for untrusted card payloads.

Architecture: Parse + Shape check (+ one repair) → Deep structure check → Sanitize → Identify
Philosophy:  Nothing leaves this package that the sanitizer could not reason about.
"""

__version__ = "1.0.0"
