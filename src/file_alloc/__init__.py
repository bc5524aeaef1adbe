"""Upload lifecycle and store/metadata reconciliation for uploaded files."""
