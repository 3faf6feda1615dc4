"""Subscriber session table, authentication cache and recovery tombstones."""