# Unit tests for sequence retrieval; Entrez is never contacted

import unittest
import logging
from io import StringIO
from unittest.mock import patch

from Bio import Entrez

from treeforge.core.retrieval import retrieve_seqs, fetch_sequence, DATABASES
from treeforge.exceptions import UnsupportedOptionError

FASTA_RESPONSES = {
    "P06747": ">sp|P06747|NS1_INFAV Non-structural protein 1\nMDPNTVSSFQVDCFLWHVRKRV\nADQELGDAPF\n",
    "P0C569": ">sp|P0C569|NS1_INFA1 Non-structural protein 1\nMDSNTVSSFQVDCFLWHVRK\n",
}


def _fake_efetch(db, id, rettype, retmode):
    return StringIO(FASTA_RESPONSES[id])


class TestRetrieveSeqs(unittest.TestCase):

    def test_keys_hold_accession_and_length(self):
        """Results keep the input order and name the sequence lengths."""
        with patch("treeforge.core.retrieval.Entrez.efetch", side_effect=_fake_efetch) as mocked:
            sequences = retrieve_seqs(["P06747", "P0C569"], "swissprot", email="me@example.org")
        self.assertEqual(list(sequences), ["P06747 length 32", "P0C569 length 20"])
        self.assertEqual(str(sequences["P0C569 length 20"].seq), "MDSNTVSSFQVDCFLWHVRK")
        self.assertEqual(mocked.call_count, 2)
        self.assertEqual(mocked.call_args_list[0][1]["db"], "protein")
        self.assertEqual(mocked.call_args_list[0][1]["id"], "P06747")
        self.assertEqual(Entrez.email, "me@example.org")

    def test_single_accession_string(self):
        with patch("treeforge.core.retrieval.Entrez.efetch", side_effect=_fake_efetch):
            sequences = retrieve_seqs("P0C569", "uniprot")
        self.assertEqual(list(sequences), ["P0C569 length 20"])

    def test_logs_each_accession(self):
        with patch("treeforge.core.retrieval.Entrez.efetch", side_effect=_fake_efetch):
            with self.assertLogs("treeforge.core.retrieval", level="INFO") as logs:
                retrieve_seqs(["P06747", "P0C569"], "swissprot", email="me@example.org")
        self.assertTrue(any("retrieving sequence P06747 ..." in line for line in logs.output))
        self.assertTrue(any("retrieving sequence P0C569 ..." in line for line in logs.output))

    def test_repeated_accessions_keep_one_entry_each(self):
        """A repeated accession is fetched once but still listed every time it was asked for."""
        with patch("treeforge.core.retrieval.Entrez.efetch", side_effect=_fake_efetch) as mocked:
            with self.assertLogs("treeforge.core.retrieval", level="WARNING") as logs:
                sequences = retrieve_seqs(["P0C569", "P0C569", "P06747", "P0C569"], "swissprot",
                                          email="me@example.org")
        self.assertEqual(list(sequences), ["P0C569 length 20", "P0C569 length 20 #2",
                                           "P06747 length 32", "P0C569 length 20 #3"])
        self.assertEqual(mocked.call_count, 2)
        self.assertIs(sequences["P0C569 length 20 #2"], sequences["P0C569 length 20"])
        self.assertTrue(any("P0C569 requested more than once" in line for line in logs.output))

    def test_nucleotide_database(self):
        with patch("treeforge.core.retrieval.Entrez.efetch",
                   return_value=StringIO(">AB000263.1 Homo sapiens\nACAAGATGCCATTG\n")) as mocked:
            record = fetch_sequence("AB000263", "GenBank")
        self.assertEqual(mocked.call_args[1]["db"], "nucleotide")
        self.assertEqual(mocked.call_args[1]["rettype"], "fasta")
        self.assertEqual(len(record.seq), 14)

    def test_unknown_database(self):
        with self.assertRaises(UnsupportedOptionError):
            retrieve_seqs(["P06747"], "pdb")

    def test_errors_propagate(self):
        with patch("treeforge.core.retrieval.Entrez.efetch", side_effect=OSError("HTTP Error 400")):
            with self.assertRaises(OSError):
                retrieve_seqs(["XYZ"], "genbank", email="me@example.org")

    def test_database_names_map_to_entrez(self):
        self.assertEqual(set(DATABASES.values()), {"nucleotide", "protein"})


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
