"""Console front end for pocket-mail."""
