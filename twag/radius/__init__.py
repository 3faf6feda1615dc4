"""EAP payload and identity helpers, and the registry of access points heard from."""