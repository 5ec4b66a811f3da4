"""Source fetching, extraction and scraping."""
