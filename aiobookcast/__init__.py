"""Stream Audiobookshelf books to Cast devices with silent sleep-timer fades."""
