"""Full-page website capture: page preparation, lazy-load scrolling and screenshots."""
