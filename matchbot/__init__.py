"""Custom-match matchmaking bot: queue, ready-check, veto, result vote and ratings."""
