"""Preview plane: provision ephemeral development previews for repositories."""
