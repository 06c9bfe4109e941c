"""
BookHub scrape core.

Decides when to scrape, extracts structured records from catalog pages,
reconciles them into the relational store by natural key, and records every
scrape attempt as a job.
"""
