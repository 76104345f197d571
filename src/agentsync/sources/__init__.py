"""Source discovery: catalogs, frontmatter and local-override conventions."""
