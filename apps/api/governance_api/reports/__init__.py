"""Report runs, signatures, print tokens and exports."""
