"""Unit hierarchy and hierarchical access control."""
