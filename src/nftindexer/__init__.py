LOGGER_NAME = "nftindexer"
