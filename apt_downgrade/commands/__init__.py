"""Click subcommands of the apt-downgrade CLI."""
