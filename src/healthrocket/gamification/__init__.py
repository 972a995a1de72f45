"""Fuel Points, challenges, contests and quests."""
