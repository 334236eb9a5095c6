"""Domain services backing the Summary Hub web and console interfaces."""
