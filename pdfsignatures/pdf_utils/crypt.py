"""
Implementation of the PDF standard security handler.

Documents processed by this library may be password-protected, and all
incremental updates written to such a document must be encrypted with the
same key material. This module implements authentication against the
``/Standard`` security handler (revisions 2, 3, 4 and 6), the crypt filters
those revisions can use (``/V2``, ``/AESV2``, ``/AESV3`` and ``/Identity``),
and the ability to produce fresh encryption dictionaries.

Public-key security handlers are not supported.

.. warning::
    RC4 and the legacy key derivation procedures are only supported for
    interoperability purposes. New documents should use AES-256 (revision 6).
"""

import logging
import secrets
import stringprep
import struct
import unicodedata
from dataclasses import dataclass
from hashlib import md5, sha256, sha384, sha512
from typing import Dict, Optional, Tuple

from cryptography.hazmat.decrepit.ciphers.algorithms import ARC4
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from . import generic, misc

__all__ = [
    'AuthStatus', 'AuthResult', 'SecurityHandlerVersion',
    'StandardSecuritySettingsRevision', 'CryptFilter', 'RC4CryptFilter',
    'AESCryptFilter', 'IdentityCryptFilter', 'CryptFilterConfiguration',
    'StandardSecurityHandler', 'build_security_handler',
    'legacy_derive_object_key',
]

logger = logging.getLogger(__name__)

ALL_PERMS = -4


def aes_cbc_decrypt(key, data, iv, use_padding=True):
    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    decryptor = cipher.decryptor()
    plaintext = decryptor.update(data) + decryptor.finalize()

    # we tolerate empty messages that don't have padding
    if use_padding and len(plaintext) > 0:
        unpadder = padding.PKCS7(128).unpadder()
        return unpadder.update(plaintext) + unpadder.finalize()
    else:
        return plaintext


def aes_cbc_encrypt(key, data, iv, use_padding=True):
    if iv is None:
        iv = secrets.token_bytes(16)
    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    encryptor = cipher.encryptor()
    if use_padding:
        padder = padding.PKCS7(128).padder()
        data = padder.update(data) + padder.finalize()
    return iv, encryptor.update(data) + encryptor.finalize()


def rc4_encrypt(key, data):
    cipher = Cipher(ARC4(key), mode=None)
    encryptor = cipher.encryptor()
    return encryptor.update(data) + encryptor.finalize()


def _as_signed(val: int) -> int:
    return struct.unpack('<i', struct.pack('<I', val & 0xffffffff))[0]


def saslprep(data: str) -> str:
    """
    Minimal SASLprep profile of stringprep (RFC 4013), as required to
    normalise passwords for revision 6 of the standard security handler.

    :param data:
        The string to prepare.
    :return:
        The prepared string.
    :raise ValueError:
        If the string contains prohibited or ill-formed bidirectional
        characters.
    """

    if not data:
        return data

    # map non-ASCII spaces to a regular space, drop "commonly mapped to
    # nothing" characters, then NFKC
    mapped = ''.join(
        ' ' if stringprep.in_table_c12(c) else c
        for c in data if not stringprep.in_table_b1(c)
    )
    prepped = unicodedata.normalize('NFKC', mapped)
    if not prepped:
        return prepped

    prohibited = (
        stringprep.in_table_c12, stringprep.in_table_c21_c22,
        stringprep.in_table_c3, stringprep.in_table_c4,
        stringprep.in_table_c5, stringprep.in_table_c6,
        stringprep.in_table_c7, stringprep.in_table_c8,
        stringprep.in_table_c9,
    )
    for c in prepped:
        if any(in_table(c) for in_table in prohibited):
            raise ValueError(f"SASLprep: prohibited character {c!r}")

    if any(stringprep.in_table_d1(c) for c in prepped):
        if any(stringprep.in_table_d2(c) for c in prepped):
            raise ValueError("SASLprep: mixed bidirectional text")
        if not (stringprep.in_table_d1(prepped[0])
                and stringprep.in_table_d1(prepped[-1])):
            raise ValueError(
                "SASLprep: RandALCat text must start and end with a "
                "RandALCat character"
            )
    return prepped


_encryption_padding = bytes.fromhex(
    '28bf4e5e4e758a4164004e56fffa01082e2e00b6d0683e802f0ca9fe6453697a'
)


def _legacy_normalise_pw(password) -> bytes:
    if isinstance(password, str):
        return generic.encode_pdfdocencoding(password[:32])
    return password[:32]


def _r6_normalise_pw(password) -> bytes:
    if isinstance(password, str):
        password = saslprep(password).encode('utf-8')
    return password[:127]


def _bytes_mod_3(input_bytes: bytes):
    # 256 is 1 mod 3, so we can just sum 'em
    return sum(b % 3 for b in input_bytes) % 3


def _r6_hash_algo(pw_bytes: bytes, current_salt: bytes,
                  u_entry: Optional[bytes] = None) -> bytes:
    initial_hash = sha256(pw_bytes)
    assert len(current_salt) == 8
    initial_hash.update(current_salt)
    if u_entry:
        assert len(u_entry) == 48
        initial_hash.update(u_entry)
    k = initial_hash.digest()
    hashes = (sha256, sha384, sha512)
    round_no = last_byte_val = 0
    while round_no < 64 or last_byte_val > round_no - 32:
        k1 = (pw_bytes + k + (u_entry or b'')) * 64
        e = aes_cbc_encrypt(
            key=k[:16], data=k1, iv=k[16:32], use_padding=False
        )[1]
        next_hash = hashes[_bytes_mod_3(e[:16])]
        k = next_hash(e).digest()
        last_byte_val = e[len(e) - 1]
        round_no += 1
    return k[:32]


def _derive_legacy_file_key(password: bytes, rev: int, keylen: int,
                            owner_entry: bytes, p_entry: int,
                            id1_entry: bytes, metadata_encrypt=True) -> bytes:
    password = (password + _encryption_padding)[:32]
    m = md5(password)
    m.update(owner_entry)
    m.update(struct.pack('<i', p_entry))
    m.update(id1_entry)
    if rev >= 4 and not metadata_encrypt:
        m.update(b"\xff\xff\xff\xff")
    md5_hash = m.digest()
    if rev >= 3:
        for _ in range(50):
            md5_hash = md5(md5_hash[:keylen]).digest()
    return md5_hash[:keylen]


def _compute_o_value_legacy_prep(password: bytes, rev: int, keylen: int):
    password = (password + _encryption_padding)[:32]
    md5_hash = md5(password).digest()
    if rev >= 3:
        for _ in range(50):
            md5_hash = md5(md5_hash).digest()
    return md5_hash[:keylen]


def _compute_o_value_legacy(owner_pwd: bytes, user_pwd: bytes,
                            rev: int, keylen: int) -> bytes:
    key = _compute_o_value_legacy_prep(owner_pwd, rev, keylen)
    val = rc4_encrypt(key, (user_pwd + _encryption_padding)[:32])
    if rev >= 3:
        for i in range(1, 20):
            val = rc4_encrypt(bytes(b ^ i for b in key), val)
    return val


def _compute_u_value_r2(password, owner_entry, p_entry, id1_entry):
    key = _derive_legacy_file_key(
        password, 2, 5, owner_entry, p_entry, id1_entry
    )
    return rc4_encrypt(key, _encryption_padding), key


def _compute_u_value_r34(password, rev, keylen, owner_entry, p_entry,
                         id1_entry, metadata_encrypt=True):
    key = _derive_legacy_file_key(
        password, rev, keylen, owner_entry, p_entry, id1_entry,
        metadata_encrypt
    )
    val = rc4_encrypt(key, md5(_encryption_padding + id1_entry).digest())
    for i in range(1, 20):
        val = rc4_encrypt(bytes(b ^ i for b in key), val)
    # the trailing 16 bytes are arbitrary; use zeroes
    return val + (b'\x00' * 16), key


def legacy_derive_object_key(shared_key: bytes, idnum: int, generation: int,
                             use_aes=False) -> bytes:
    """
    Function that does the key derivation for PDF's legacy security handlers.

    :param shared_key:
        Global file encryption key.
    :param idnum:
        ID of the object being written.
    :param generation:
        Generation number of the object being written.
    :param use_aes:
        Boolean indicating whether the security handler uses RC4 or AES(-128).
    :return:
        The object key.
    """
    key = (
        shared_key + struct.pack("<i", idnum)[:3]
        + struct.pack("<i", generation)[:2]
    )
    if use_aes:
        key += b'sAlT'
    return md5(key).digest()[:min(16, len(shared_key) + 5)]


class AuthStatus(misc.OrderedEnum):
    """
    Describes the status after an authentication attempt.
    """

    FAILED = 0
    USER = 1
    OWNER = 2


@dataclass(frozen=True)
class AuthResult:
    """
    Describes the result of an authentication attempt.
    """

    status: AuthStatus
    """
    Authentication status after the authentication attempt.
    """

    permission_flags: Optional[int] = None
    """
    Granular permission flags. Only meaningful for user-level access.
    """


class SecurityHandlerVersion(misc.OrderedEnum):
    """
    Indicates the security handler's version (``/V`` entry).
    """

    RC4_40 = 1
    RC4_LONGER_KEYS = 2
    RC4_OR_AES128 = 4
    AES256 = 5

    def as_pdf_object(self) -> generic.NumberObject:
        return generic.NumberObject(self.value)

    @classmethod
    def from_number(cls, value) -> 'SecurityHandlerVersion':
        try:
            return cls(value)
        except ValueError:
            raise misc.PdfReadError(
                f"Unsupported security handler version {value}"
            )


class StandardSecuritySettingsRevision(misc.OrderedEnum):
    """
    Indicate the standard security handler revision (``/R`` entry).
    """

    RC4_BASIC = 2
    RC4_EXTENDED = 3
    RC4_OR_AES128 = 4
    AES256 = 6

    def as_pdf_object(self) -> generic.NumberObject:
        return generic.NumberObject(self.value)

    @classmethod
    def from_number(cls, value) -> 'StandardSecuritySettingsRevision':
        try:
            return cls(value)
        except ValueError:
            raise misc.PdfReadError(
                f"Unsupported standard security handler revision {value}"
            )


class CryptFilter:
    """
    Generic crypt filter. Crypt filters derive object keys from the
    file encryption key held by their security handler, and
    encrypt/decrypt strings and streams with those keys.
    """

    method: str = '/None'
    """
    Value of the ``/CFM`` entry for this filter.
    """

    keylen: int = 0

    _handler: Optional['StandardSecurityHandler'] = None

    def _set_security_handler(self, handler: 'StandardSecurityHandler'):
        self._handler = handler

    @property
    def shared_key(self) -> bytes:
        """
        The file encryption key.

        :raise misc.PdfError:
            If the security handler has not been authenticated.
        """
        if self._handler is None:
            raise misc.PdfError("Crypt filter is not bound to a handler.")
        return self._handler.get_file_encryption_key()

    def derive_object_key(self, idnum: int, gen: int) -> bytes:
        raise NotImplementedError

    def encrypt(self, key: bytes, plaintext: bytes) -> bytes:
        raise NotImplementedError

    def decrypt(self, key: bytes, ciphertext: bytes) -> bytes:
        raise NotImplementedError

    def as_pdf_object(self) -> generic.DictionaryObject:
        result = generic.DictionaryObject({
            generic.NameObject('/CFM'): generic.NameObject(self.method),
            generic.NameObject('/AuthEvent'): generic.NameObject('/DocOpen'),
        })
        if self.keylen:
            result['/Length'] = generic.NumberObject(self.keylen)
        return result


class RC4CryptFilter(CryptFilter):
    """
    RC4 crypt filter (``/V2``), with the legacy per-object key derivation.
    """

    method = '/V2'

    def __init__(self, keylen: int = 16):
        self.keylen = keylen

    def derive_object_key(self, idnum, gen):
        return legacy_derive_object_key(self.shared_key, idnum, gen)

    def encrypt(self, key, plaintext):
        return rc4_encrypt(key, plaintext)

    def decrypt(self, key, ciphertext):
        return rc4_encrypt(key, ciphertext)


class AESCryptFilter(CryptFilter):
    """
    AES-CBC crypt filter. Ciphertexts are prefixed with their random IV.

    :param keylen:
        Either 16 (``/AESV2``) or 32 (``/AESV3``).
    """

    def __init__(self, keylen: int):
        if keylen not in (16, 32):
            raise misc.PdfError("AES key length must be 16 or 32 bytes")
        self.keylen = keylen
        self.method = '/AESV2' if keylen == 16 else '/AESV3'

    def derive_object_key(self, idnum, gen):
        if self.keylen == 32:
            return self.shared_key
        return legacy_derive_object_key(
            self.shared_key, idnum, gen, use_aes=True
        )

    def encrypt(self, key, plaintext):
        iv, ciphertext = aes_cbc_encrypt(key, plaintext, None)
        return iv + ciphertext

    def decrypt(self, key, ciphertext):
        if len(ciphertext) < 16:
            # nothing to decrypt; some producers emit empty strings as-is
            return b''
        iv, data = ciphertext[:16], ciphertext[16:]
        return aes_cbc_decrypt(key, data, iv)


class IdentityCryptFilter(CryptFilter):
    """
    Identity crypt filter: leaves data untouched.
    """

    method = '/None'

    def derive_object_key(self, idnum, gen):
        return b''

    def encrypt(self, key, plaintext):
        return plaintext

    def decrypt(self, key, ciphertext):
        return ciphertext

    def as_pdf_object(self):
        raise misc.PdfError("The identity filter cannot be serialised")


IDENTITY = generic.NameObject('/Identity')
STD_CF = generic.NameObject('/StdCF')


def _cf_from_dict(cfdict: generic.DictionaryObject) -> CryptFilter:
    method = cfdict.get('/CFM', generic.NameObject('/None'))
    keylen = int(cfdict.get('/Length', 0))
    # some producers give the length in bits
    if keylen > 32:
        keylen //= 8
    if method == '/V2':
        return RC4CryptFilter(keylen=keylen or 16)
    elif method == '/AESV2':
        return AESCryptFilter(keylen=16)
    elif method == '/AESV3':
        return AESCryptFilter(keylen=32)
    elif method == '/None':
        return IdentityCryptFilter()
    raise misc.PdfReadError(f"Unsupported crypt filter method {method}")


class CryptFilterConfiguration:
    """
    Crypt filter store attached to a security handler.

    :param crypt_filters:
        Dictionary mapping names to their corresponding crypt filters.
    :param default_stream_filter:
        Name of the default crypt filter to use for streams.
    :param default_string_filter:
        Name of the default crypt filter to use for strings.
    """

    def __init__(self, crypt_filters: Dict[str, CryptFilter] = None,
                 default_stream_filter=IDENTITY,
                 default_string_filter=IDENTITY):
        self._crypt_filters = dict(crypt_filters or {})
        self._crypt_filters[IDENTITY] = IdentityCryptFilter()
        self._default_string_filter_name = default_string_filter
        self._default_stream_filter_name = default_stream_filter

    def __getitem__(self, item) -> CryptFilter:
        try:
            return self._crypt_filters[item]
        except KeyError:
            raise misc.PdfReadError(f"Crypt filter {item} is not defined")

    def _set_security_handler(self, handler):
        for cf in self._crypt_filters.values():
            cf._set_security_handler(handler)

    def get_for_stream(self) -> CryptFilter:
        return self[self._default_stream_filter_name]

    def get_for_string(self) -> CryptFilter:
        return self[self._default_string_filter_name]

    def as_pdf_object(self) -> generic.DictionaryObject:
        result = generic.DictionaryObject({
            generic.NameObject('/StmF'):
                generic.NameObject(self._default_stream_filter_name),
            generic.NameObject('/StrF'):
                generic.NameObject(self._default_string_filter_name),
        })
        result['/CF'] = generic.DictionaryObject({
            generic.NameObject(name): cf.as_pdf_object()
            for name, cf in self._crypt_filters.items() if name != IDENTITY
        })
        return result

    @classmethod
    def read_from_pdf_object(cls, encrypt_dict: generic.DictionaryObject):
        cfs = {
            generic.NameObject(name): _cf_from_dict(cfdict.get_object())
            for name, cfdict in encrypt_dict.get('/CF', {}).items()
        }
        return cls(
            cfs,
            default_stream_filter=encrypt_dict.get('/StmF', IDENTITY),
            default_string_filter=encrypt_dict.get('/StrF', IDENTITY),
        )


def _single_filter_config(cf: CryptFilter) -> CryptFilterConfiguration:
    return CryptFilterConfiguration(
        {STD_CF: cf}, default_stream_filter=STD_CF,
        default_string_filter=STD_CF
    )


class StandardSecurityHandler:
    """
    Implementation of the standard (password-based) security handler.

    You shouldn't have to instantiate :class:`.StandardSecurityHandler`
    objects yourself. For encrypting new documents, use
    :meth:`build_from_pw` or :meth:`build_from_pw_legacy`. For decrypting
    existing documents, use :func:`build_security_handler`.

    :param version:
        Indicates the version of the security handler (``/V`` entry).
    :param revision:
        Revision of the standard security handler (``/R`` entry).
    :param legacy_keylen:
        Key length in bytes, only relevant for revisions below 6.
    :param perm_flags:
        Permission flags, as a signed 32-bit integer.
    :param odata:
        Contents of the ``/O`` entry.
    :param udata:
        Contents of the ``/U`` entry.
    :param oeseed:
        Contents of the ``/OE`` entry (revision 6 only).
    :param ueseed:
        Contents of the ``/UE`` entry (revision 6 only).
    :param encrypted_perms:
        Contents of the ``/Perms`` entry (revision 6 only).
    :param encrypt_metadata:
        Whether the document metadata stream is encrypted.
    :param crypt_filter_config:
        The crypt filter configuration for this handler.
    """

    def __init__(self, version: SecurityHandlerVersion,
                 revision: StandardSecuritySettingsRevision,
                 legacy_keylen: int, perm_flags: int, odata: bytes,
                 udata: bytes, oeseed: bytes = None, ueseed: bytes = None,
                 encrypted_perms: bytes = None, encrypt_metadata=True,
                 crypt_filter_config: CryptFilterConfiguration = None):
        self.version = version
        self.revision = revision
        self.keylen = legacy_keylen
        self.perms = _as_signed(perm_flags)
        if revision == StandardSecuritySettingsRevision.AES256:
            self.odata = odata[:48]
            self.udata = udata[:48]
            if not (oeseed and ueseed and encrypted_perms):
                raise misc.PdfReadError(
                    "/OE, /UE and /Perms are required for revision 6"
                )
            self.oeseed = oeseed[:32]
            self.ueseed = ueseed[:32]
            self.encrypted_perms = encrypted_perms[:16]
        else:
            self.odata = odata[:32]
            self.udata = udata[:32]
            self.oeseed = self.ueseed = self.encrypted_perms = None
        self.encrypt_metadata = encrypt_metadata
        if crypt_filter_config is None:
            if version == SecurityHandlerVersion.AES256:
                cf = AESCryptFilter(keylen=32)
            else:
                cf = RC4CryptFilter(keylen=legacy_keylen)
            crypt_filter_config = _single_filter_config(cf)
        self.crypt_filter_config = crypt_filter_config
        crypt_filter_config._set_security_handler(self)
        self._shared_key: Optional[bytes] = None
        self._auth_status = AuthStatus.FAILED

    @classmethod
    def build_from_pw_legacy(cls, rev: StandardSecuritySettingsRevision,
                             id1, desired_owner_pass, desired_user_pass=None,
                             keylen_bytes=16, use_aes128=True,
                             perms: int = ALL_PERMS):
        """
        Initialise a legacy password-based security handler, to attach to a
        :class:`~.writer.PdfFileWriter`.

        :param rev:
            Security handler revision to use, see
            :class:`.StandardSecuritySettingsRevision`.
        :param id1:
            The first part of the document ID.
        :param desired_owner_pass:
            Desired owner password.
        :param desired_user_pass:
            Desired user password.
        :param keylen_bytes:
            Length of the key (in bytes).
        :param use_aes128:
            Use AES-128 instead of RC4 (revision 4 only).
        :param perms:
            Permission bits to set.
        :return:
            A :class:`StandardSecurityHandler` instance.
        """
        desired_owner_pass = _legacy_normalise_pw(desired_owner_pass)
        desired_user_pass = (
            _legacy_normalise_pw(desired_user_pass)
            if desired_user_pass is not None else desired_owner_pass
        )
        if rev == StandardSecuritySettingsRevision.RC4_BASIC:
            keylen_bytes = 5
        elif rev == StandardSecuritySettingsRevision.AES256:
            raise ValueError("Revision 6 is not a legacy revision")
        o_entry = _compute_o_value_legacy(
            desired_owner_pass, desired_user_pass, rev.value, keylen_bytes
        )
        if rev == StandardSecuritySettingsRevision.RC4_BASIC:
            u_entry, key = _compute_u_value_r2(
                desired_user_pass, o_entry, perms, id1
            )
        else:
            u_entry, key = _compute_u_value_r34(
                desired_user_pass, rev.value, keylen_bytes, o_entry, perms,
                id1
            )

        if rev == StandardSecuritySettingsRevision.RC4_OR_AES128:
            version = SecurityHandlerVersion.RC4_OR_AES128
            cf = (
                AESCryptFilter(keylen=16) if use_aes128
                else RC4CryptFilter(keylen=keylen_bytes)
            )
            cfc = _single_filter_config(cf)
        else:
            version = (
                SecurityHandlerVersion.RC4_40
                if rev == StandardSecuritySettingsRevision.RC4_BASIC
                else SecurityHandlerVersion.RC4_LONGER_KEYS
            )
            cfc = None

        sh = cls(
            version=version, revision=rev, legacy_keylen=keylen_bytes,
            perm_flags=perms, odata=o_entry, udata=u_entry,
            crypt_filter_config=cfc,
        )
        sh._shared_key = key
        sh._auth_status = AuthStatus.OWNER
        return sh

    @classmethod
    def build_from_pw(cls, desired_owner_pass, desired_user_pass=None,
                      perms: int = ALL_PERMS, encrypt_metadata=True):
        """
        Initialise a password-based security handler backed by AES-256,
        to attach to a :class:`~.writer.PdfFileWriter`.

        :param desired_owner_pass:
            Desired owner password.
        :param desired_user_pass:
            Desired user password.
        :param perms:
            Desired usage permissions.
        :param encrypt_metadata:
            Whether to set up the security handler for encrypting metadata
            as well.
        :return:
            A :class:`StandardSecurityHandler` instance.
        """
        owner_pw_bytes = _r6_normalise_pw(desired_owner_pass)
        user_pw_bytes = (
            _r6_normalise_pw(desired_user_pass)
            if desired_user_pass is not None else owner_pw_bytes
        )
        encryption_key = secrets.token_bytes(32)
        u_validation_salt = secrets.token_bytes(8)
        u_key_salt = secrets.token_bytes(8)
        u_hash = _r6_hash_algo(user_pw_bytes, u_validation_salt)
        u_entry = u_hash + u_validation_salt + u_key_salt
        u_interm_key = _r6_hash_algo(user_pw_bytes, u_key_salt)
        _, ue_seed = aes_cbc_encrypt(
            u_interm_key, encryption_key, bytes(16), use_padding=False
        )

        o_validation_salt = secrets.token_bytes(8)
        o_key_salt = secrets.token_bytes(8)
        o_hash = _r6_hash_algo(owner_pw_bytes, o_validation_salt, u_entry)
        o_entry = o_hash + o_validation_salt + o_key_salt
        o_interm_key = _r6_hash_algo(owner_pw_bytes, o_key_salt, u_entry)
        _, oe_seed = aes_cbc_encrypt(
            o_interm_key, encryption_key, bytes(16), use_padding=False
        )

        perms_bytes = struct.pack('<I', perms & 0xfffffffc)
        extd_perms_bytes = (
            perms_bytes + (b'\xff' * 4)
            + (b'T' if encrypt_metadata else b'F')
            + b'adb' + secrets.token_bytes(4)
        )
        cipher = Cipher(algorithms.AES(encryption_key), modes.ECB())
        encryptor = cipher.encryptor()
        encrypted_perms = (
            encryptor.update(extd_perms_bytes) + encryptor.finalize()
        )

        sh = cls(
            version=SecurityHandlerVersion.AES256,
            revision=StandardSecuritySettingsRevision.AES256,
            legacy_keylen=32, perm_flags=perms, odata=o_entry,
            udata=u_entry, oeseed=oe_seed, ueseed=ue_seed,
            encrypted_perms=encrypted_perms,
            encrypt_metadata=encrypt_metadata,
            crypt_filter_config=_single_filter_config(
                AESCryptFilter(keylen=32)
            ),
        )
        sh._shared_key = encryption_key
        sh._auth_status = AuthStatus.OWNER
        return sh

    @classmethod
    def instantiate_from_pdf_object(
            cls, encrypt_dict: generic.DictionaryObject):
        """
        Instantiate an object of this class using a PDF dictionary
        as source.

        :param encrypt_dict:
            The encryption dictionary of the document.
        :raise misc.PdfReadError:
            If the dictionary is malformed or uses an unsupported scheme.
        """
        try:
            v = SecurityHandlerVersion.from_number(encrypt_dict['/V'])
            r = StandardSecuritySettingsRevision.from_number(
                encrypt_dict['/R']
            )
            odata = encrypt_dict['/O'].original_bytes
            udata = encrypt_dict['/U'].original_bytes
            perms = int(encrypt_dict['/P'])
        except KeyError as e:
            raise misc.PdfReadError(
                f"Encryption dictionary is missing required entry {e}"
            )
        if v == SecurityHandlerVersion.RC4_40:
            keylen = 5
        elif v == SecurityHandlerVersion.AES256:
            keylen = 32
        else:
            keylen = int(encrypt_dict.get('/Length', 40)) // 8

        cfc = None
        if v >= SecurityHandlerVersion.RC4_OR_AES128:
            cfc = CryptFilterConfiguration.read_from_pdf_object(encrypt_dict)

        def _opt_bytes(key):
            val = encrypt_dict.get(key)
            return val.original_bytes if val is not None else None

        return cls(
            version=v, revision=r, legacy_keylen=keylen, perm_flags=perms,
            odata=odata, udata=udata, oeseed=_opt_bytes('/OE'),
            ueseed=_opt_bytes('/UE'), encrypted_perms=_opt_bytes('/Perms'),
            encrypt_metadata=bool(encrypt_dict.get('/EncryptMetadata', True)),
            crypt_filter_config=cfc
        )

    def as_pdf_object(self) -> generic.DictionaryObject:
        """
        Serialise this security handler to a PDF encryption dictionary.
        """
        result = generic.DictionaryObject()
        result['/Filter'] = generic.NameObject('/Standard')
        result['/O'] = generic.ByteStringObject(self.odata)
        result['/U'] = generic.ByteStringObject(self.udata)
        result['/P'] = generic.NumberObject(self.perms)
        result['/V'] = self.version.as_pdf_object()
        result['/R'] = self.revision.as_pdf_object()
        result['/Length'] = generic.NumberObject(self.keylen * 8)
        if self.version >= SecurityHandlerVersion.RC4_OR_AES128:
            result['/EncryptMetadata'] = \
                generic.BooleanObject(self.encrypt_metadata)
            result.update(self.crypt_filter_config.as_pdf_object())
        if self.revision == StandardSecuritySettingsRevision.AES256:
            result['/OE'] = generic.ByteStringObject(self.oeseed)
            result['/UE'] = generic.ByteStringObject(self.ueseed)
            result['/Perms'] = generic.ByteStringObject(self.encrypted_perms)
        return result

    def _auth_user_password_legacy(self, id1: bytes, password):
        rev = self.revision.value
        if rev == 2:
            user_tok, key = _compute_u_value_r2(
                password, self.odata, self.perms, id1
            )
            match = user_tok == self.udata
        else:
            user_tok, key = _compute_u_value_r34(
                password, rev, self.keylen, self.odata, self.perms, id1,
                self.encrypt_metadata
            )
            match = user_tok[:16] == self.udata[:16]
        return (key if match else None)

    def _authenticate_legacy(self, id1: bytes, password: bytes):
        rev = self.revision.value
        key = _compute_o_value_legacy_prep(password, rev, self.keylen)
        if rev == 2:
            userpass = rc4_encrypt(key, self.odata)
        else:
            val = self.odata
            for i in range(19, -1, -1):
                val = rc4_encrypt(bytes(b ^ i for b in key), val)
            userpass = val
        owner_key = self._auth_user_password_legacy(id1, userpass)
        if owner_key is not None:
            return AuthStatus.OWNER, owner_key
        user_key = self._auth_user_password_legacy(id1, password)
        if user_key is not None:
            return AuthStatus.USER, user_key
        return AuthStatus.FAILED, None

    def _authenticate_r6(self, password: bytes) -> Tuple[AuthStatus, bytes]:
        entry = self.odata
        o_entry_split = entry[:32], entry[32:40], entry[40:48]
        u_entry = self.udata
        u_entry_split = u_entry[:32], u_entry[32:40], u_entry[40:48]
        if _r6_hash_algo(password, o_entry_split[1], u_entry) \
                == o_entry_split[0]:
            interm_key = _r6_hash_algo(password, o_entry_split[2], u_entry)
            seed = self.oeseed
            status = AuthStatus.OWNER
        elif _r6_hash_algo(password, u_entry_split[1]) == u_entry_split[0]:
            interm_key = _r6_hash_algo(password, u_entry_split[2])
            seed = self.ueseed
            status = AuthStatus.USER
        else:
            return AuthStatus.FAILED, None
        key = aes_cbc_decrypt(interm_key, seed, bytes(16), use_padding=False)

        # check the /Perms entry against what we know
        cipher = Cipher(algorithms.AES(key), modes.ECB())
        decryptor = cipher.decryptor()
        decrypted_p_entry = \
            decryptor.update(self.encrypted_perms) + decryptor.finalize()
        p_check = struct.unpack('<i', decrypted_p_entry[:4])[0]
        meta_flag = decrypted_p_entry[8:9]
        if decrypted_p_entry[9:12] != b'adb' or p_check != self.perms \
                or meta_flag != (b'T' if self.encrypt_metadata else b'F'):
            raise misc.PdfReadError(
                "The /Perms entry of the encryption dictionary is "
                "inconsistent with the rest of the dictionary."
            )
        return status, key

    def authenticate(self, credential, id1: bytes = None) -> AuthResult:
        """
        Authenticate a user to this security handler.

        :param credential:
            The password, as a string or as bytes.
        :param id1:
            First part of the document ID.
            Required for revisions below 6.
        :return:
            An :class:`AuthResult` object indicating the level of access
            obtained.
        """
        if self.revision == StandardSecuritySettingsRevision.AES256:
            status, key = self._authenticate_r6(_r6_normalise_pw(credential))
        else:
            if id1 is None:
                raise misc.PdfReadError(
                    "id1 must be specified for legacy encryption"
                )
            status, key = self._authenticate_legacy(
                id1, _legacy_normalise_pw(credential)
            )
        if key is not None:
            self._shared_key = key
        self._auth_status = status
        logger.debug("Authentication against standard handler: %s", status)
        return AuthResult(
            status, self.perms if status != AuthStatus.FAILED else None
        )

    def is_authenticated(self) -> bool:
        return self._auth_status != AuthStatus.FAILED

    def get_file_encryption_key(self) -> bytes:
        """
        Retrieve the (global) file encryption key for this security handler.

        :raise misc.PdfError:
            If the handler has not been authenticated.
        """
        if self._shared_key is None:
            raise misc.PdfError("Security handler was not authenticated.")
        return self._shared_key

    def get_string_filter(self) -> CryptFilter:
        return self.crypt_filter_config.get_for_string()

    def get_stream_filter(self) -> CryptFilter:
        return self.crypt_filter_config.get_for_stream()


def build_security_handler(encrypt_dict: generic.DictionaryObject) \
        -> StandardSecurityHandler:
    """
    Build a security handler from an encryption dictionary read from a
    document.

    :param encrypt_dict:
        The encryption dictionary.
    :raise misc.PdfReadError:
        If the handler type is not supported.
    """
    handler_name = encrypt_dict.get('/Filter', generic.NameObject('/Standard'))
    if handler_name != '/Standard':
        raise misc.PdfReadError(
            f"Security handler {handler_name} is not supported; only "
            f"password-based encryption can be processed."
        )
    return StandardSecurityHandler.instantiate_from_pdf_object(encrypt_dict)

