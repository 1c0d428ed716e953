"""Mirror Bitbucket Cloud pull request data into a local cache and export it as CSV."""

__version__ = "0.1.0"
