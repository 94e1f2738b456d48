"""In-memory fakes of the command runner, file system and UUID generator."""