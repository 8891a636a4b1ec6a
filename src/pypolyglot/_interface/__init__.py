"""Internal helpers for :class:`pypolyglot.interface.Interface`."""
