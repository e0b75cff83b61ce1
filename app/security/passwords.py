from pwdlib import PasswordHash


MIN_PASSWORD_LENGTH = 6

_password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    return _password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> bool:
    return _password_hash.verify(raw_password, hashed_password)
