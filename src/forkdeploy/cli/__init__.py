"""Command line interface for forkdeploy."""
