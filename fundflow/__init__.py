"""FundFlow backend: community-verified milestone funding for African projects."""
