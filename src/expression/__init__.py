"""Abstract build expressions and their Nix rendering."""
