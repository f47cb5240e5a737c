"""Manager server: configuration, storage and HTTP interface."""