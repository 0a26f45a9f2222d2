"""Points, ranks, streaks, achievements and leaderboards."""
