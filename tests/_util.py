from fleetca.filesystem import to_pem


def pem(*objects) -> str:
    """Concatenated PEM text of certificates, CRLs or keys"""
    return "".join(to_pem(obj) for obj in objects)


def file_mode(path) -> int:
    return path.stat().st_mode & 0o777
