"""Pallet completion tracking backed by a shared spreadsheet document."""
