"""Command line interface for clusterwatch."""
