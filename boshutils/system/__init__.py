"""Running commands, working with files and computing IPv4 networks."""